[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "jacdcore"
version = "0.0.16"
description = "Device core services over a packet link: a control channel, a file-transfer channel, a timeout lock and key-value storage"
requires-python = ">=3.10"
dependencies = []
keywords = ["embedded", "device", "uploader", "controller", "packet", "sha1", "lock"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["jacdcore"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
