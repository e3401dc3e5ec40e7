import sys

from safe_bash.hook import main

sys.exit(main())
