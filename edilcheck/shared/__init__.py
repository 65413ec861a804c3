"""Models, utilities and logging shared by the client and the backup server."""
