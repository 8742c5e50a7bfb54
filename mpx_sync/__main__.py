from mpx_sync.cli.mpx_sync import main

raise SystemExit(main())
