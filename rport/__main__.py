from rport.manager import main

raise SystemExit(main())
