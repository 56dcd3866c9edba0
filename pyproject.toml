[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ctxware"
version = "0.1.0"
description = "Request middleware for a small in-process, context-based web app: JSON request logging, JWT auth, hCaptcha, load shedding, a metrics monitor and tracing attributes."
requires-python = ">=3.10"
dependencies = [
    "pyjwt",
    "psutil",
]
keywords = [
    "middleware",
    "http",
    "jwt",
    "logging",
    "hcaptcha",
    "load-shedding",
    "monitoring",
    "tracing",
]
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
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Middleware",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["ctxware"]

[tool.hatch.build.targets.sdist]
include = [
    "ctxware",
    "tests",
    "README.md",
]

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
