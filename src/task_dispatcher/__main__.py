import sys

from task_dispatcher.cli import main

sys.exit(main())
