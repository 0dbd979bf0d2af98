[build-system]
requires = ["setuptools>=61"]
build-backend = "setuptools.build_meta"

[project]
name = "iotconfig"
version = "3.0.0"
description = "Load and validate YAML configuration for an IoT device gateway: devices, MQTT clients, HTTP server and views."
requires-python = ">=3.10"
dependencies = [
    "pyyaml>=6.0",
]
keywords = ["iot", "configuration", "yaml", "mqtt", "modbus", "gpio", "home-automation"]
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
    "Topic :: Home Automation",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest>=7",
]

[tool.setuptools.packages.find]
include = ["iotconfig*"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
