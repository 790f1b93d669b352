"""Entry point for running migrations as a module.

Usage:
    python -m schemashift.db.migrations up
    python -m schemashift.db.migrations down
    python -m schemashift.db.migrations status
    python -m schemashift.db.migrations create add_new_feature
"""

from .cli import main

if __name__ == "__main__":
    main()
