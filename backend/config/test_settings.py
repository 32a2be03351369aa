from .settings import *  # noqa: F401,F403

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

STRIPE_USE_STUB = True
STRIPE_SECRET_KEY = ''
STRIPE_WEBHOOK_SECRET = 'whsec_test'
FRONTEND_URL = 'https://app.test'
PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
