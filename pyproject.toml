[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "thinglink"
version = "0.1.0"
description = "A compact JSON codec and a simple MQTT 3.1.1 client for telemetry devices"
requires-python = ">=3.10"
dependencies = []
keywords = ["mqtt", "json", "telemetry", "iot", "pubsub"]
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
    "Topic :: Internet",
    "Topic :: File Formats :: JSON",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["thinglink"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
