# Abstract provider interfaces
