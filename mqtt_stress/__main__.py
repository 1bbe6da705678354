import sys

from mqtt_stress.stress import main

sys.exit(main())
