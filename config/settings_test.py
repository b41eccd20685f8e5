from .settings import *

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.dummy.DummyCache',
    }
}
CATALOG_CACHE_TTL = 0

STORAGES = {
    'default': {'BACKEND': 'django.core.files.storage.FileSystemStorage'},
    'staticfiles': {'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage'},
}

STRIPE_SECRET_KEY = 'sk_test_fake_key_for_testing'
STRIPE_WEBHOOK_SECRET = 'whsec_fake_secret_for_testing'
RAZORPAY_KEY_ID = 'rzp_test_fake_key'
RAZORPAY_KEY_SECRET = 'rzp_fake_secret_for_testing'
RAZORPAY_WEBHOOK_SECRET = 'rzp_fake_webhook_secret'
PAYMENTS_ENABLED = True
PAYMENT_GATEWAYS = ['razorpay', 'stripe']
DEFAULT_PAYMENT_GATEWAY = 'razorpay'
SITE_URL = 'http://testserver'

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
