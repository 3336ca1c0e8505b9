[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "voxorch"
version = "0.1.0"
description = "Shard orchestrator: registry, lifecycle management, provisioning and HTTP API for game-world shards"
requires-python = ">=3.10"
keywords = ["orchestrator", "shards", "game-server", "provisioning", "heartbeat", "kubernetes"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: System :: Distributed Computing",
    "Topic :: Games/Entertainment",
]
dependencies = [
    "aiohttp>=3.9",
    "httpx>=0.27",
]

[project.optional-dependencies]
test = [
    "pytest>=8",
    "pytest-asyncio>=0.23",
]

[project.scripts]
voxorch = "voxorch.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["voxorch"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
