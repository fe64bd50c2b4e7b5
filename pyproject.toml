[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "raftkit"
version = "1.0.0"
description = "A small Raft consensus node, console and in-memory log, with a key-value server, a traffic signal controller and socket helpers"
requires-python = ">=3.10"
dependencies = []
keywords = ["raft", "consensus", "replication", "key-value", "sockets", "distributed"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
raftkit-node = "raftkit.server:main"
raftkit-console = "raftkit.console:main"
raftkit-kv = "raftkit.kvstore:main"
raftkit-traffic = "raftkit.traffic:main"
raftkit-echo-server = "raftkit.echo:server_main"
raftkit-echo-client = "raftkit.echo:client_main"
raftkit-demos = "raftkit.demos:main"

[tool.hatch.build.targets.wheel]
packages = ["raftkit"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
