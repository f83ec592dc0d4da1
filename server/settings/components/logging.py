"""Logging configuration.

Every module logs through ``logging.getLogger(__name__)``; the
``server`` logger collects all of them.
"""

from server.settings.components import config

LOG_LEVEL = config('DJANGO_LOG_LEVEL', default='INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'console': {
            'format': (
                '%(asctime)s %(levelname)s [%(threadName)s] '
                '%(name)s: %(message)s'
            ),
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'console',
        },
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'WARNING',
            'propagate': False,
        },
        'server': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        # Transfer retries and callbacks are noisy below WARNING
        'boto3': {'handlers': ['console'], 'level': 'WARNING'},
        'botocore': {'handlers': ['console'], 'level': 'WARNING'},
        's3transfer': {'handlers': ['console'], 'level': 'WARNING'},
    },
}
