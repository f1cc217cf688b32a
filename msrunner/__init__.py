"""
msrunner: supervises external mass spectrometry tools (DeconTools, MSAlign,
MS-GF+, MSConvert/MzRefinery, PPMErrorCharter), tracking their progress from
console output or log files and deciding how each run ended.
"""

__version__ = "1.0.0"
