[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "devicefinder"
version = "0.1.0"
description = "Find a device on the local network by UDP broadcast, mDNS advertisement or subnet scan"
requires-python = ">=3.10"
keywords = ["discovery", "udp", "broadcast", "mdns", "subnet", "scan", "heartbeat"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]
dependencies = [
    "psutil",
    "platformdirs",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
devicefinder = "devicefinder.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["devicefinder"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
