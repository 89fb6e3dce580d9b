"""
Product Image Batch Pipeline

Four-stage synchronous pipeline, run once per uploaded image:
1. Mask    - luma-threshold background removal / solid replacement
2. Resolve - resize plan from presets or explicit dimensions
3. Encode  - orient, resize, flatten, re-encode at mapped quality
4. Name    - deterministic output filename

Successful outputs are returned as a single file or bundled into a ZIP.
"""
