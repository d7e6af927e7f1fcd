[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "clockserve"
version = "0.1.0"
description = "Mini-program back end: daily check-ins with streaks, goods inventory, reminder clocks and weather alerts."
requires-python = ">=3.10"
keywords = ["flask", "reminders", "check-in", "weather", "wechat", "rabbitmq"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: Dynamic Content",
]
dependencies = [
    "flask",
    "sqlalchemy",
    "redis",
    "pika",
    "requests",
    "beautifulsoup4",
    "unidecode",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
clockserve = "clockserve.server:main"

[tool.hatch.build.targets.wheel]
packages = ["clockserve"]

[tool.hatch.build.targets.sdist]
include = ["clockserve", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]
