"""HTTP surface for labprofile."""
