"""Main settings file.

Assembles the settings components in order with django-split-settings.
"""

from split_settings.tools import include

_base_settings = (
    'components/common.py',
    'components/logging.py',
    'components/storages.py',
    'components/uploads.py',
)

# Include settings:
include(*_base_settings)
