"""Allow running as: python -m crowdfund"""

from crowdfund.cli import main

if __name__ == "__main__":
    main()
