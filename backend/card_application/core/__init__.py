"""
Application wizard core: step registry, validation, the draft aggregate,
local autosave, remote draft sync and the wizard controller.
"""
