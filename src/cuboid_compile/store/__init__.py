"""Local file stores the compile queue collaborates with."""
