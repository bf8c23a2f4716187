[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "xraystrategy"
version = "0.1.0"
description = "Trace sampling, error formatting and context-missing strategies for distributed tracing clients"
requires-python = ">=3.10"
dependencies = []
keywords = ["tracing", "sampling", "x-ray", "reservoir", "observability"]
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
    "Topic :: System :: Monitoring",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["xraystrategy"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
