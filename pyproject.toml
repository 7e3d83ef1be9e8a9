[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "espfs-tools"
version = "0.1.0"
description = "Heatshrink LZSS compression and tools for building and reading read-only EspFs images"
requires-python = ">=3.10"
dependencies = []
keywords = ["heatshrink", "lzss", "compression", "espfs", "filesystem", "embedded", "image"]
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
    "Topic :: System :: Archiving :: Compression",
    "Topic :: Software Development :: Embedded Systems",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest", "hypothesis"]

[project.scripts]
espfs-heatshrink = "espfs_tools.cli:main"
espfs-mkimage = "espfs_tools.mkimage:main"

[tool.hatch.build.targets.wheel]
packages = ["espfs_tools"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
