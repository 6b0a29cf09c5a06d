[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "uq"
version = "0.1.0"
description = "A message queue server with topics, consumer lines and redis, memcached and HTTP front ends"
requires-python = ">=3.10"
dependencies = []
keywords = ["message queue", "queue", "redis", "memcached", "http", "topic", "line"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
uq = "uq.cli:main"

[tool.setuptools.packages.find]
include = ["uq*"]

[tool.pytest.ini_options]
addopts = "-ra"
