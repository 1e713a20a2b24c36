import sys

from cordcenterline.cli import main

sys.exit(main())
