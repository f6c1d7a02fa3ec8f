[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gputelemetry"
version = "1.0.0"
description = "Store GPU telemetry samples in a SQL database and serve them through a read-only REST API."
requires-python = ">=3.10"
keywords = ["gpu", "telemetry", "dcgm", "monitoring", "rest", "api", "sqlalchemy", "flask"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "flask>=2.2",
    "sqlalchemy>=2.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
gputelemetry-gateway = "gputelemetry.gateway:main"

[tool.hatch.build.targets.wheel]
packages = ["gputelemetry"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
