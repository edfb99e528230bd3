"""Allow running with: python -m journaldesk"""

from journaldesk.main import main

main()
