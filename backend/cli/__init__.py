"""Command line tooling for the LoveLab quote backend."""
