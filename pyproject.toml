[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "scanhub"
version = "0.1.0"
description = "Run RustScan port scans in Docker from the command line or through a queued HTTP API"
requires-python = ">=3.10"
keywords = [
    "port-scanner",
    "rustscan",
    "nmap",
    "docker",
    "http-api",
    "webhook",
    "network-monitoring",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Information Technology",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Monitoring",
    "Topic :: Security",
]
dependencies = [
    "flask",
    "httpx",
]

[project.optional-dependencies]
test = [
    "pytest",
    "respx",
]

[project.scripts]
scanhub = "scanhub.cli:main"
scanhub-mcp-handler = "scanhub.mcp_handler:main"

[tool.hatch.build.targets.wheel]
packages = ["scanhub"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
