"""Navigator Safe Meta information.
   Navigator Safe keeps a user's sensitive records encrypted behind a
   single master passphrase.
"""
__title__ = 'navigator_safe'
__description__ = (
   'Navigator Safe: client-side encrypted vault for credentials, '
   'documents and two-factor secrets.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2023 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
