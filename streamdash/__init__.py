"""StreamDash bandwidth usage API"""
