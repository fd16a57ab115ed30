from campaign_lab.cli import main

raise SystemExit(main())
