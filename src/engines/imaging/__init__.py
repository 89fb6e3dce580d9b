"""
Imaging Engine

Pure image transformations used by the batch pipeline:
- background: luma-threshold background removal / solid replacement
- geometry:   resize plans (contain / cover) and presets
- encoder:    format + quality mapping and final serialization
- naming:     deterministic output filenames
"""

from pillow_heif import register_heif_opener

# HEIC/HEIF uploads decode through Pillow like any other format
register_heif_opener()
