from setuptools import setup, find_packages
import sys

if sys.version_info < (3, 9):
    print("Please use python 3.9 or newer.")
    sys.exit(1)


requires = [
    "requests",
    "zope.interface",
]

sqlalchemy_deps = ["sqlalchemy>=1.4"]

pyramid_deps = ["pyramid>=2.0", "waitress", "python-dotenv"]


setup(
    name="shopinstall",
    version="0.1a",
    description="Shopify app install handshake and discount api for pyramid.",
    install_requires=requires,
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    zip_safe=False,
    extras_require={
        "sqlalchemy": sqlalchemy_deps,
        "pyramid": pyramid_deps,
        "test": ["pytest"] + sqlalchemy_deps + pyramid_deps,
        "dev": ["flake8", "black"],
    },
    entry_points={
        "paste.app_factory": ["main = shopinstall.web:main"],
        "console_scripts": ["shopinstall-serve = shopinstall.web:serve"],
    },
)
