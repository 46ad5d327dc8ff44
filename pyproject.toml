[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "stereoslam"
version = "0.1.0"
description = "Geometry, triangulation, loop detection and bundle adjustment building blocks for stereo visual-inertial SLAM"
requires-python = ">=3.10"
dependencies = ["numpy"]
keywords = [
    "slam",
    "stereo",
    "visual-inertial",
    "bundle-adjustment",
    "sim3",
    "loop-closure",
    "triangulation",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Image Recognition",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["stereoslam"]

[tool.pytest.ini_options]
addopts = "-ra"
