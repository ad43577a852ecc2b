[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "microkit"
version = "0.5.0"
description = "A microservices toolkit: WSGI RPC handler, request stats, in-memory registry commands, chat bot and plugins"
requires-python = ">=3.10"
keywords = ["microservices", "rpc", "registry", "bot", "wsgi", "stats"]
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
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "jinja2",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["microkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
