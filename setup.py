#!/usr/bin/env python
from setuptools import find_packages, setup

VERSION = __import__("gamebox").get_version()
INSTALL_REQUIREMENTS = [
    "Django>=5.2",
    "celery[redis]>=5.3",
    "channels>=4.0",
    "channels-redis>=4.1",
    "django-redis>=5.4",
    "Pillow>=10.0",
    "psycopg[binary]>=3.1",
    "requests>=2.31",
    "sentry-sdk>=2.0",
    "structlog>=24.1",
]
EXTRAS_REQUIRE = {"test": ["pytest>=8.0", "pytest-django>=4.8", "daphne>=4.0"]}
SCRIPTS = ["manage.py"]
DESCRIPTION = "Game catalog and resumable batch import jobs for a screenshot quiz"
CLASSIFIERS = """\
Environment :: Web Environment
Framework :: Django
Programming Language :: Python
Programming Language :: Python :: 3
""".splitlines()

with open("README.md", "r") as f:
    LONG_DESCRIPTION = f.read()


setup(
    name="gamebox",
    version=VERSION,
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["gamebox", "gamebox.*", "importer", "importer.*"]),
    include_package_data=True,
    scripts=SCRIPTS,
    install_requires=INSTALL_REQUIREMENTS,
    extras_require=EXTRAS_REQUIRE,
    classifiers=CLASSIFIERS,
    python_requires=">=3.10",
)
