"""
XRay Report Assistant - AI Radiology Report Generation & Refinement

Generates structured radiology reports from X-ray images, refines them
through doctor feedback, and folds accepted feedback into an expert
knowledge base that steers every future analysis.

IMPORTANT: Reports are drafts. They must be reviewed by a qualified radiologist.
"""

__version__ = "1.0.0"
__author__ = "XRay Report Assistant Team"
