"""CallEase call-center backend."""
