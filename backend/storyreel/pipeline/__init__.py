"""Pipeline stages: scene planning, image synthesis, video synthesis, stitching."""
