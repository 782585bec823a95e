import sys

from graph_plan._cli import main

sys.exit(main())
