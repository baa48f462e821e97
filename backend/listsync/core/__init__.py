# Core configuration and interfaces
