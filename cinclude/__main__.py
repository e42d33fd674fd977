"""Enable running cinclude as a module: python -m cinclude"""

import sys

from cinclude import (
    cli,
)

if __name__ == "__main__":
    # pylint: disable=no-value-for-parameter
    sys.exit(cli())
