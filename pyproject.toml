[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rasdecode"
version = "0.1.0"
description = "Decoders for Linux RAS trace events: memory controller, MCE, CXL, extended log, disk, devlink and memory-failure reports"
requires-python = ">=3.10"
dependencies = []
keywords = ["ras", "reliability", "mce", "edac", "cxl", "tracing", "hardware errors"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["rasdecode"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
