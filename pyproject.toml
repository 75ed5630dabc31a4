[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "millstream"
version = "0.1.0"
description = "Building blocks for message-driven applications: structured logging, retrying publishers, subscriber multiplexing and request/reply over pub/sub."
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = [
    "messaging",
    "pubsub",
    "events",
    "request-reply",
    "logging",
    "retry",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
millstream-consolidate-gomods = "millstream.consolidate_gomods:main"
millstream-update-examples-deps = "millstream.update_examples_deps:main"
millstream-validate-examples = "millstream.validate_examples:main"

[tool.hatch.build.targets.wheel]
packages = ["millstream"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
