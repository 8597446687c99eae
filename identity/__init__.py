"""Device identity directory built from DHCP reservations"""
