"""
Centralized definitions for all project-wide constants.

This module consolidates file paths, directory names, and other static values
to ensure consistency and ease of maintenance. By defining these constants in one
place, we avoid hardcoding strings in other modules.

Attributes:
    PROJECT_ROOT (str): The absolute path to the project's root directory.
    CONFIG_DIR (str): The name of the configuration directory.
    DATA_DIR (str): The name of the data directory.
    OUTPUT_DIR (str): The name of the directory where reports are saved.
    REPORT_GEN_CONFIG_FILENAME (str): The filename for the report generator config.
    MOCK_DATA_FILENAME (str): The filename of the bundled mock experiment results.
    REPORT_FILENAME_PREFIX (str): The prefix of every generated PDF filename.
"""

import os

# --- Project Root ---
# Resolves the absolute path to the project's root directory, allowing for
# consistent pathing regardless of where the script is executed from.
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# --- Top-Level Directory Names ---
CONFIG_DIR = "config"
DATA_DIR = "data"
OUTPUT_DIR = "output"

# --- Configuration Filenames ---
REPORT_GEN_CONFIG_FILENAME = "config_report_generator.yaml"

# --- Data Files ---
MOCK_DATA_FILENAME = "mock_results.json"
MOCK_DATA_PATH = os.path.join(PROJECT_ROOT, DATA_DIR, MOCK_DATA_FILENAME)

# --- Report Artifacts ---
REPORT_FILENAME_PREFIX = "experiment-report"
