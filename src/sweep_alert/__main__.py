from sweep_alert.cli import main

raise SystemExit(main())
