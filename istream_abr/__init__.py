"""Buffer-occupancy / drift-plus-penalty bitrate decision engine for DASH players."""
