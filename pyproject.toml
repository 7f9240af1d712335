[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "prerender-shortener"
version = "0.1.0"
description = "URL shortener that serves pre-rendered HTML to crawlers and redirects everyone else"
requires-python = ">=3.10"
keywords = ["url-shortener", "prerender", "seo", "crawler", "headless-browser", "flask"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]
dependencies = [
    "flask>=2.3",
    "sqlalchemy>=2.0",
    "python-dotenv>=1.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
]

[project.scripts]
prerender-shortener = "prerender_shortener.server:main"

[tool.hatch.build.targets.wheel]
packages = ["prerender_shortener"]

[tool.hatch.build.targets.sdist]
include = [
    "prerender_shortener",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
testpaths = ["tests"]
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
